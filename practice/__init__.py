"""practice/ -- Practice challenges and the completion ledger.

Layer rule: practice/ calls into auth/ and storage/; nothing imports practice/
except the CLI.
"""
