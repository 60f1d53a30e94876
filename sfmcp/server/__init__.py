"""
Transport and connection layer.

- ports: free port discovery for the HTTP listener
- capabilities: client capability negotiation
- sessions: session table for the multiplexed HTTP transport
- engine: per-session JSON-RPC processor
- logging_gate: capability-aware logging sink
- context: process-wide router state
- transport, http_transport, stdio_transport: transport selection and modes
- config: configuration loading
"""
