"""HTTP surface of cidway (Starlette)."""
