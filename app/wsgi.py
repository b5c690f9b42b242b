from app.modulekit import create_app

app = create_app()
