"""core/ -- Configuration and time source shared by every other package.

Layer rule: core/ imports only stdlib + third-party libraries. It does NOT
import from auth/, storage/, or practice/.
"""
