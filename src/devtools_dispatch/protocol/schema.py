"""Domain schema table.

A static catalogue of every domain, command and event name the client knows
about, with the stability tier each one carries in the protocol's own
documentation. The dispatch core never validates payloads against it; it is
used to tell commands from events in the domain proxies, to report stability
when a command is issued, and to list the catalogue from the CLI.

Names that are not in the table are still sent and routed unchanged. The
remote engine is the authority on what it supports.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache

from .messages import join_method, split_method


class Stability(str, Enum):
    """Stability tier of a command or event."""

    STABLE = "stable"
    EXPERIMENTAL = "experimental"
    DEPRECATED = "deprecated"


class MemberKind(str, Enum):
    """Whether a domain member is a command or an event."""

    COMMAND = "command"
    EVENT = "event"


@dataclass(frozen=True)
class MemberSpec:
    """One command or event of a domain."""

    domain: str
    name: str
    kind: MemberKind
    stability: Stability = Stability.STABLE

    @property
    def qualified_name(self) -> str:
        return join_method(self.domain, self.name)


@dataclass(frozen=True)
class DomainSchema:
    """Commands and events of one domain."""

    name: str
    description: str = ""
    members: dict[str, MemberSpec] = field(default_factory=dict)

    def commands(self) -> list[MemberSpec]:
        return [m for m in self.members.values() if m.kind == MemberKind.COMMAND]

    def events(self) -> list[MemberSpec]:
        return [m for m in self.members.values() if m.kind == MemberKind.EVENT]


class SchemaTable:
    """Read-only lookup over a set of domain schemas."""

    def __init__(self, domains: list[DomainSchema]) -> None:
        self._domains = {d.name: d for d in domains}

    def domains(self) -> list[str]:
        return list(self._domains)

    def domain(self, name: str) -> DomainSchema | None:
        return self._domains.get(name)

    def get(self, domain: str, name: str) -> MemberSpec | None:
        schema = self._domains.get(domain)
        if schema is None:
            return None
        return schema.members.get(name)

    def lookup(self, qualified_name: str) -> MemberSpec | None:
        """Look up a member by its flattened `<Domain>.<name>`."""
        domain, name = split_method(qualified_name)
        return self.get(domain, name)

    def is_event(self, domain: str, name: str) -> bool:
        member = self.get(domain, name)
        return member is not None and member.kind == MemberKind.EVENT

    def stability(self, domain: str, name: str) -> Stability | None:
        member = self.get(domain, name)
        return member.stability if member else None

    def members(
        self,
        domain: str | None = None,
        kind: MemberKind | None = None,
        stability: Stability | None = None,
    ) -> list[MemberSpec]:
        """List members, optionally filtered."""
        result = []
        for schema in self._domains.values():
            if domain is not None and schema.name != domain:
                continue
            for member in schema.members.values():
                if kind is not None and member.kind != kind:
                    continue
                if stability is not None and member.stability != stability:
                    continue
                result.append(member)
        return result

    def __iter__(self) -> Iterator[DomainSchema]:
        return iter(self._domains.values())

    def __contains__(self, qualified_name: object) -> bool:
        if not isinstance(qualified_name, str):
            return False
        domain, _, name = qualified_name.partition(".")
        return self.get(domain, name) is not None


def _domain(
    name: str,
    description: str,
    commands: dict[str, Stability],
    events: dict[str, Stability] | None = None,
) -> DomainSchema:
    members = {
        command: MemberSpec(name, command, MemberKind.COMMAND, stability)
        for command, stability in commands.items()
    }
    for event, stability in (events or {}).items():
        members[event] = MemberSpec(name, event, MemberKind.EVENT, stability)
    return DomainSchema(name=name, description=description, members=members)


_S = Stability.STABLE
_X = Stability.EXPERIMENTAL
_D = Stability.DEPRECATED

DEBUGGER = _domain(
    "Debugger",
    "JavaScript debugging: breakpoints, stepping, stack traces and script sources.",
    commands={
        "enable": _S,
        "disable": _S,
        "setBreakpointsActive": _S,
        "setSkipAllPauses": _S,
        "setBreakpointByUrl": _S,
        "setBreakPoint": _S,
        "removeBreakpoint": _S,
        "getPossibleBreakpoints": _X,
        "continueToLocation": _S,
        "stepOver": _S,
        "stepInto": _S,
        "stepOut": _S,
        "pause": _S,
        "scheduleStepIntoAsync": _X,
        "resume": _S,
        "searchInContent": _X,
        "setScriptSource": _S,
        "restartFrame": _S,
        "getScriptSource": _S,
        "setPauseOnExceptions": _S,
        "evaluateOnCallFrame": _S,
        "setVariableValue": _S,
        "setAsyncCallStackDepth": _S,
        "setBlackboxPatterns": _X,
        "setBlackboxedRanges": _X,
    },
    events={
        "scriptParsed": _S,
        "scriptFailedToParse": _S,
        "breakpointResolved": _S,
        "paused": _S,
        "resumed": _S,
    },
)

DOM = _domain(
    "DOM",
    "Reading and mutating the DOM tree; nodes are addressed by integer ids.",
    commands={
        "enable": _S,
        "disable": _S,
        "getDocument": _S,
        "getFlattenedDocument": _S,
        "collectClassNamesFromSubtree": _S,
        "requestChildNodes": _S,
        "querySelector": _S,
        "querySelectorAll": _S,
        "setNodeName": _S,
        "setNodeValue": _S,
        "removeNode": _S,
        "setAttributeValue": _S,
        "setAttributesAsText": _S,
        "removeAttribute": _S,
        "getOuterHTML": _S,
        "setOuterHTML": _S,
        "performSearch": _X,
        "getSearchResults": _X,
        "discardSearchResults": _X,
        "requestNode": _S,
        "pushNodeByPathToFrontend": _X,
        "pushNodesByBackendIdsToFrontend": _X,
        "setInspectedNode": _X,
        "resolveNode": _S,
        "getAttributes": _S,
        "copyTo": _X,
        "moveTo": _S,
        "undo": _X,
        "redo": _X,
        "markUndoableState": _X,
        "focus": _X,
        "setFileInputFiles": _X,
        "getBoxModel": _X,
        "getNodeForLocation": _X,
        "getRelayoutBoundary": _X,
    },
    events={
        "documentUpdated": _S,
        "setChildNodes": _S,
        "attributeModified": _S,
        "attributeRemoved": _S,
        "inlineStyleInvalidated": _X,
        "characterDataModified": _S,
        "childNodeCountUpdated": _S,
        "childNodeInserted": _S,
        "childNodeRemoved": _S,
        "shadowRootPushed": _X,
        "shadowRootPopped": _X,
        "pseudoElementAdded": _X,
        "pseudoElementRemoved": _X,
        "distributedNodesUpdated": _X,
    },
)

EMULATION = _domain(
    "Emulation",
    "Device, media and environment emulation for the page.",
    commands={
        "setDeviceMetricsOverride": _S,
        "clearDeviceMetricsOverride": _S,
        "resetPageScaleFactor": _X,
        "setPageScaleFactor": _X,
        "setVisibleSize": _D,
        "setScriptExecutionDisabled": _X,
        "setGeolocationOverride": _X,
        "clearGeolocationOverride": _X,
        "setTouchEmulationEnabled": _S,
        "setEmulatedMedia": _S,
        "setCPUThrottlingRate": _X,
        "canEmulate": _X,
        "setVirtualTimePolicy": _X,
        "setDefaultBackgroundColorOverride": _S,
    },
    events={
        "virtualTimeBudgetExpired": _S,
    },
)

INPUT = _domain(
    "Input",
    "Synthesized keyboard, mouse and touch input.",
    commands={
        "setIgnoreInputEvents": _S,
        "dispatchKeyEvent": _S,
        "dispatchMouseEvent": _S,
        "dispatchTouchEvent": _X,
        "emulateTouchFromMouseEvent": _X,
        "synthesizePinchGesture": _X,
        "synthesizeScrollGesture": _X,
        "synthesizeTapGesture": _X,
    },
)

PAGE = _domain(
    "Page",
    "Inspection and control of the inspected page and its frames.",
    commands={
        "enable": _S,
        "disable": _S,
        "addScriptToEvaluateOnLoad": _D,
        "removeScriptToEvaluateOnLoad": _D,
        "addScriptToEvaluateOnNewDocument": _X,
        "removeScriptToEvaluateOnNewDocument": _X,
        "setAutoAttachToCreatedPages": _X,
        "reload": _S,
        "navigate": _S,
        "stopLoading": _X,
        "getNavigationHistory": _X,
        "navigateToHistoryEntry": _X,
        "getResourceTree": _X,
        "getResourceContent": _X,
        "searchInResource": _X,
        "setDocumentContent": _X,
        "captureScreenshot": _X,
        "printToPDF": _X,
        "startScreencast": _X,
        "stopScreencast": _X,
        "screencastFrameAck": _X,
        "handleJavaScriptDialog": _S,
        "getAppManifest": _X,
        "requestAppBanner": _X,
        "setControlNavigations": _X,
        "processNavigation": _X,
        "getLayoutMetrics": _X,
        "createIsolatedWorld": _X,
    },
    events={
        "domContentEventFired": _S,
        "loadEventFired": _S,
        "frameAttached": _S,
        "frameNavigated": _S,
        "frameDetached": _S,
        "frameStartedLoading": _X,
        "frameStoppedLoading": _X,
        "frameScheduledNavigation": _X,
        "frameClearedScheduledNavigation": _X,
        "frameResized": _X,
        "javascriptDialogOpening": _S,
        "javascriptDialogClosed": _S,
        "screencastFrame": _X,
        "screencastVisibilityChanged": _X,
        "interstitialShown": _S,
        "interstitialHidden": _S,
        "navigationRequested": _S,
    },
)

RUNTIME = _domain(
    "Runtime",
    "Remote evaluation and mirror objects for the JavaScript runtime.",
    commands={
        "evaluate": _S,
        "awaitPromise": _S,
        "callFunctionOn": _S,
        "getProperties": _S,
        "releaseObject": _S,
        "releaseObjectGroup": _S,
        "runIfWaitingForDebugger": _S,
        "enable": _S,
        "disable": _S,
        "discardConsoleEntries": _S,
        "setCustomObjectFormatterEnabled": _S,
        "compileScript": _S,
        "runScript": _S,
    },
    events={
        "executionContextCreated": _S,
        "executionContextDestroyed": _S,
        "executionContextsCleared": _S,
        "exceptionThrown": _S,
        "exceptionRevoked": _S,
    },
)

TARGET = _domain(
    "Target",
    "Discovery of additional targets and attaching sessions to them.",
    commands={
        "setDiscoverTargets": _S,
        "setAutoAttach": _S,
        "setAttachToFrames": _S,
        "setRemoteLocations": _S,
        "sendMessageToTarget": _S,
        "getTargetInfo": _S,
        "activateTarget": _S,
        "closeTarget": _S,
        "attachToTarget": _S,
        "detachFromTarget": _S,
        "createBrowserContext": _S,
        "disposeBrowserContext": _S,
        "createTarget": _S,
        "getTargets": _S,
    },
    events={
        "targetCreated": _S,
        "targetInfoChanged": _S,
        "targetDestroyed": _S,
        "attachedToTarget": _S,
        "detachedFromTarget": _S,
        "receivedMessageFromTarget": _S,
    },
)

NETWORK = _domain(
    "Network",
    "Network activity of the page: requests, responses and their timing.",
    commands={
        "enable": _S,
        "disable": _S,
    },
    events={
        "requestWillBeSent": _S,
        "responseReceived": _S,
        "loadingFinished": _S,
        "loadingFailed": _S,
    },
)

SECURITY = _domain(
    "Security",
    "Security state of the page and its resources.",
    commands={
        "enable": _S,
        "disable": _S,
    },
    events={
        "securityStateChanged": _S,
    },
)


@lru_cache(maxsize=1)
def default_schema() -> SchemaTable:
    """The built-in catalogue."""
    return SchemaTable(
        [DEBUGGER, DOM, EMULATION, INPUT, NETWORK, PAGE, RUNTIME, SECURITY, TARGET]
    )
