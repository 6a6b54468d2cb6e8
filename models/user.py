""" Represents a user in the system.

A User imports repositories and owns them.
A User connects a provider account by storing an access token.
The token is encrypted at rest and resolved for each remote call made on the
User's behalf; it is never cached outside the database.

"""

from database import db


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    github_integration_enabled = db.Column(db.Boolean, nullable=False, default=False)
    github_token_encrypted = db.Column(db.LargeBinary, nullable=True)

    repositories = db.relationship("Repository", back_populates="owner_user", lazy=True)

    def set_github_token(self, token: str | None):
        from services.github_service import encrypt_token

        if token:
            self.github_token_encrypted = encrypt_token(token)
        else:
            self.github_token_encrypted = None

    def get_github_token(self) -> str | None:
        from services.github_service import decrypt_token

        return decrypt_token(self.github_token_encrypted)

    def __repr__(self):
        return f"<User {self.id}>"
