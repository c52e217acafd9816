from pydantic import BaseModel


class Identity(BaseModel):
    """The signed-in agent as reported by the external auth service."""
    id: str
    email: str

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()
