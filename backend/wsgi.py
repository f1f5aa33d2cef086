# backend/wsgi.py
from erpsync import create_app

app = create_app()
