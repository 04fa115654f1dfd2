"""
API server package — HTTP/REST interface.

Exposes profile discovery, vault extraction, scan control and the resulting
connections and clusters to a local frontend. Delegates to the extraction and
scanner layers for all work.
"""
