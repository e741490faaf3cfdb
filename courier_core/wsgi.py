"""
WSGI config for the courier dispatch platform.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'courier_core.settings')

application = get_wsgi_application()
