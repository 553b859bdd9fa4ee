"""auth/ -- Authentication and multi-factor verification engine for Tasklane.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and mail/.
It does NOT import from api/. api/ imports from auth/, not the other way
around (auth/dependencies.py is the one FastAPI-aware module).
"""
