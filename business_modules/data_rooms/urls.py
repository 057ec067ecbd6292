"""URL configuration for the data room sharing module."""

from django.urls import include, path

app_name = 'data_rooms'

urlpatterns = [
    path('', include('business_modules.data_rooms.api.v1.urls')),
]
