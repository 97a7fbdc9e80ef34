from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path('admin/', admin.site.urls),

    path('api/wallet/', include('wallets.urls')),
    path('api/dive/', include('dive.urls')),
]
