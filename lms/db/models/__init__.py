"""ORM models aggregate exports."""
from .library import (  # noqa: F401
	Base,
	User,
	Book,
	BorrowRequest,
	BorrowedBook,
	EmailTemplate,
	ResetPasswordToken,
)

__all__ = [
	"Base",
	"User",
	"Book",
	"BorrowRequest",
	"BorrowedBook",
	"EmailTemplate",
	"ResetPasswordToken",
]
