"""Core interception engine.

Everything needed to hold a gateway session and turn intercepted mainframe
changes into provisioning events, independent of the HTTP status API.

Module Structure:
    - codec.py      : hex length fields and "a " envelope framing
    - messages.py   : header layout, handshake/confirmation builders, frame view
    - transport.py  : GatewaySession (socket, handshake, framed send/receive)
    - registry.py   : EndpointConfig snapshots and EndpointRegistry lookup
    - records.py    : operation codes and record payload parsers
    - factory.py    : ResourceEvent construction per operation family
    - events.py     : outbound event model
    - sinks.py      : HTTP and audit delivery of events
    - dispatcher.py : RS/completion pairing, confirmations, routing
    - worker.py     : InterceptorWorker threads and InterceptorService
    - exceptions.py : error hierarchy, one recovery policy per class

Usage Pattern:
    Modules are NOT auto-imported; import explicitly when needed:
        from interceptor.core.worker import InterceptorService
        from interceptor.core.dispatcher import InterceptionDispatcher
        from interceptor.core.records import OperationCode, parse_account
"""
