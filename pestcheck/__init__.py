import os

import django


def setup():
    """Point Django at the PestCheck settings and load them."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'pestcheck.settings')
    django.setup()
