"""Connection graph: requests, canonical connections, degree and discovery."""
