from flask_login import UserMixin


class User(UserMixin):
    """The single dashboard user; credentials live in the settings file, not the DB."""

    def __init__(self, username):
        self.username = username

    def get_id(self):
        return self.username

    def __repr__(self):
        return f"<User {self.username}>"
