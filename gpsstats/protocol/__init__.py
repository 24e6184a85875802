"""Wire formats spoken by the bridge: gpsd reports in, status payloads out."""
