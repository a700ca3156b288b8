# backend/wsgi.py
from pharmaflow import create_app

app = create_app()
