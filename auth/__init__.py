"""auth/ -- Accounts, sessions, and the facade that ties them together.

Layer rule: auth/ imports from core/ and storage/, never from practice/.
practice/ calls into auth/, not the other way around.
"""
