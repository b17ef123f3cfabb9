# Transport and resilience infrastructure
