# Stream ingress
