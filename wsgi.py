import os
from app_factory import create_app

app = create_app()

if __name__ == "__main__":
    from seeder.seed_repository import seed_repositories
    from seeder.seed_user import seed_admin_user

    seed_repositories(app)
    seed_admin_user(app)

    app.run(
        host="0.0.0.0",
        port=int(os.getenv("PORT", 3000)),
        debug=os.getenv("FLASK_DEBUG") == "1",
    )
