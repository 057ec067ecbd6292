from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/data-rooms/', include('business_modules.data_rooms.urls')),
]
