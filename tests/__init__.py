"""
Test package for Chorus

- Unit tests for the message model, store, classifier, flow and arbiter
- Async tests for the bus, stream consumer and agent runtimes
- API tests for the admin endpoints
- Mock text generators and a scripted random source (tests.helpers)
"""
