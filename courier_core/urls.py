"""
Courier Dispatch Main URL Configuration
"""

from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from core.health import health_check, readiness_check


# ===========================================
# ADMIN SITE CUSTOMIZATION
# ===========================================
admin.site.site_header = "Courier Dispatch Control Tower"
admin.site.site_title = "Courier Dispatch Admin"
admin.site.index_title = "Operations"


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'Courier Dispatch API',
        'version': '1.0.0',
        'endpoints': {
            'auth': {
                'token': '/api/auth/token/',
                'refresh': '/api/auth/token/refresh/',
            },
            'users': {
                'register': '/api/users/',
                'me': '/api/users/me/',
                'role': '/api/users/me/role/',
                'couriers': '/api/users/couriers/',
                'businesses': '/api/users/businesses/',
            },
            'deliveries': '/api/deliveries/',
            'courier_location': '/api/courier/location/',
            'reports': {
                'overview': '/api/reports/overview/',
                'trends': '/api/reports/trends/',
                'leaderboard': '/api/reports/leaderboard/',
                'business': '/api/reports/business/',
            },
            'websockets': [
                '/ws/deliveries/<id>/',
                '/ws/couriers/<id>/location/',
                '/ws/courier/',
                '/ws/business/',
                '/ws/dispatch/',
            ],
        }
    })


urlpatterns = [
    # Admin
    path('admin/', admin.site.urls),

    # Health probes
    path('health/', health_check, name='health'),
    path('health/ready/', readiness_check, name='health-ready'),

    # API Root & documentation
    path('api/', api_root, name='api-root'),
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # App URLs
    path('api/', include('core.urls')),
    path('api/', include('logistics.urls')),
    path('api/', include('reports.urls')),
]
