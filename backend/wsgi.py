# backend/wsgi.py
from hive import create_app

app = create_app()
