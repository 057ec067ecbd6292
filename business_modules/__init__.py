"""Business modules built on top of the back-office core."""
