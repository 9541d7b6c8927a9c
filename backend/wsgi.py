# backend/wsgi.py
from vitrina import create_app

app = create_app()
