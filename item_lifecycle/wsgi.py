"""
WSGI config for item_lifecycle project.
"""

import os
from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'item_lifecycle.settings')
application = get_wsgi_application()
