"""GitHub transport: request objects, operation documents and the HTTP client."""
