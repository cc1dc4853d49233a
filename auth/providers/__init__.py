"""auth/providers/ -- Backing identity/profile provider adapters.

AuthProvider (base.py) is the only type the facade depends on. LocalAuthProvider
keeps everything in the SQLAlchemy account directory; SupabaseAuthProvider
talks to a hosted Supabase project. auth.factory picks one from Settings.
"""

from auth.providers.base import SIGNED_IN, SIGNED_OUT, AuthProvider
from auth.providers.local import LocalAuthProvider
from auth.providers.supabase import SupabaseAuthProvider

__all__ = ["SIGNED_IN", "SIGNED_OUT", "AuthProvider", "LocalAuthProvider", "SupabaseAuthProvider"]
