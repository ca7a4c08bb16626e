"""Diagnostic event stream: in-process bus plus a persisted query surface."""
