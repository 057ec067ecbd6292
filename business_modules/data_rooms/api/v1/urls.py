"""URL configuration for the data room sharing API v1."""

from django.urls import path

from .views import (
    RoomActivityExportView, RoomActivityView, RoomNdaView, SharedLinkAccessView,
    SharedLinkDetailView, SharedLinkListView, SharedLinkRedeemView, ShortCodeRedirectView,
)

urlpatterns = [
    # Public shared links (no auth required)
    path('shared/<str:token>/', SharedLinkAccessView.as_view(), name='shared-link'),
    path(
        'shared/<str:token>/access/<str:access_id>/',
        SharedLinkRedeemView.as_view(),
        name='shared-link-redeem'
    ),
    path('s/<str:code>/', ShortCodeRedirectView.as_view(), name='short-link'),

    # NDA signing is public, template management needs a session
    path('rooms/<str:room_id>/nda/', RoomNdaView.as_view(), name='room-nda'),

    # Owner endpoints
    path('rooms/<str:room_id>/shared-links/', SharedLinkListView.as_view(), name='shared-link-list'),
    path(
        'rooms/<str:room_id>/shared-links/<str:link_id>/',
        SharedLinkDetailView.as_view(),
        name='shared-link-detail'
    ),
    path('rooms/<str:room_id>/activity/', RoomActivityView.as_view(), name='room-activity'),
    path(
        'rooms/<str:room_id>/activity/export/',
        RoomActivityExportView.as_view(),
        name='room-activity-export'
    ),
]
