"""Domain models"""

from .dialer import (
    ContactStatus,
    AgentStatus,
    CallStatus,
    MachineDetection,
    Contact,
    Agent,
    Call,
    QueueEntry,
    ActiveCall,
)

from .session import (
    InFlightCall,
    DialerSession,
)

from .call_status import (
    StatusPhase,
    CallStatusEvent,
    StatusUpdateRecord,
)

from .disposition import (
    Disposition,
    DispositionRequest,
    BulkDispositionRequest,
)

from .results import (
    Found,
    Exhausted,
    Failed,
    NextContactResult,
)
