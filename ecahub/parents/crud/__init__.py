"""Parent ECA CRUD Package"""
from .selections import get_student_selections, submit_selections
from .eca import (
    list_parent_terms,
    get_parent_term,
    build_parent_term_view,
    respond_to_invitation,
    list_parent_allocations,
    list_parent_invitations,
)

__all__ = [
    "get_student_selections",
    "submit_selections",
    "list_parent_terms",
    "get_parent_term",
    "build_parent_term_view",
    "respond_to_invitation",
    "list_parent_allocations",
    "list_parent_invitations",
]
