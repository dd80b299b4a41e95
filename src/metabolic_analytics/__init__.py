# Import report builders so they register themselves.
from . import reports  # noqa: F401
