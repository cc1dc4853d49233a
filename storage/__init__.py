"""storage/ -- Tab-scoped and persistent key-value storage for session records.

Layer rule: storage/ may import auth.models (domain shapes) but nothing else
from auth/, and never practice/.
"""
