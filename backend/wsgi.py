# backend/wsgi.py
from lobbytrace import create_app

app = create_app()
