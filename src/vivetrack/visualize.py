"""
Visualization module for device snapshots.

Provides simple console and JSONL output for debugging, and hands device
transforms to an external render target. Drawing itself happens elsewhere.
"""

import json
from datetime import datetime
from typing import Optional, Dict, List, Protocol
from pathlib import Path
from dataclasses import dataclass

from .convert import CoordinateFrame, frame_to_matrix
from .query import QueryResult, QueryStatus


class TransformTarget(Protocol):
    def set_transform(self, values: List[float]) -> None: ...


@dataclass(frozen=True)
class RenderCapabilities:
    """What the render target supports, agreed once at startup."""
    set_transform: bool = False

    @classmethod
    def negotiate(cls, target: Optional[object], api_version: int = 1) -> "RenderCapabilities":
        """
        Targets built against render API version 2+ accept transforms.

        Args:
            target: Render target (None for headless use)
            api_version: Version reported by the render collaborator
        """
        return cls(set_transform=target is not None and api_version >= 2)


def render_transform(frame: CoordinateFrame) -> List[float]:
    """
    16 values: X axis, 0, Y axis, 0, Z axis, 0, origin, 1.

    This is the row-vector layout read in order.
    """
    return frame_to_matrix(frame, transpose=False).ravel().tolist()


class TrackingVisualizer:
    """
    Simple visualization for device snapshots.

    Provides:
    - Console output of frames and buttons
    - JSONL export per poll
    - Transform hand-off to a render target
    """

    def __init__(
        self,
        output_dir: Optional[str] = None,
        enable_console: bool = True,
        render_target: Optional[TransformTarget] = None,
        capabilities: Optional[RenderCapabilities] = None
    ):
        """
        Initialize visualizer.

        Args:
            output_dir: Directory for JSONL output (None disables file output)
            enable_console: Print snapshots to console
            render_target: Receives transforms when capabilities allow it
            capabilities: Result of RenderCapabilities.negotiate
        """
        self.output_dir = Path(output_dir) if output_dir else None
        if self.output_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        self.enable_console = enable_console
        self.render_target = render_target
        self.capabilities = capabilities or RenderCapabilities()

        self._output_file = None
        self._output_path: Optional[Path] = None
        self._poll_count = 0

    @property
    def output_path(self) -> Optional[Path]:
        return self._output_path

    def start_session(self, session_name: Optional[str] = None) -> None:
        """Start a new visualization session."""
        if session_name is None:
            session_name = datetime.now().strftime("%Y%m%d_%H%M%S")

        if self.output_dir:
            self._output_path = self.output_dir / f"{session_name}_snapshots.jsonl"
            self._output_file = open(self._output_path, 'w', encoding='utf-8')
            self._output_file.write(json.dumps({
                "_type": "header",
                "session": session_name,
                "started_at": datetime.now().isoformat()
            }) + '\n')

        self._poll_count = 0

    def end_session(self) -> None:
        """End current session."""
        if self._output_file:
            self._output_file.write(json.dumps({
                "_type": "footer",
                "ended_at": datetime.now().isoformat(),
                "total_polls": self._poll_count
            }) + '\n')
            self._output_file.close()
            self._output_file = None

    def visualize(self, results: Dict[str, QueryResult], poll_id: int) -> None:
        """
        Output one poll's query results.

        Args:
            results: Label (e.g. "Controller[0]") -> QueryResult
            poll_id: Poll the results belong to
        """
        self._poll_count += 1

        if self.enable_console:
            self._print_results(results, poll_id)

        if self._output_file:
            entry = {
                "_type": "poll",
                "poll_id": poll_id,
                "results": {label: r.to_dict() for label, r in results.items()},
            }
            self._output_file.write(json.dumps(entry) + '\n')

        if self.capabilities.set_transform and self.render_target is not None:
            for result in results.values():
                if result.frame is not None:
                    self.render_target.set_transform(render_transform(result.frame))

    def _print_results(self, results: Dict[str, QueryResult], poll_id: int) -> None:
        print(f"\n[poll {poll_id}]")
        print("-" * 50)

        for label, result in results.items():
            if result.status != QueryStatus.OK:
                print(f"  {label}: [{result.status.value.upper()}] {result.message}")
                continue
            if result.frame is None:
                print(f"  {label}: [NO POSE]")
                continue

            pos = result.frame.origin
            quat = result.frame.quaternion
            state = result.snapshot.state.value
            print(f"  {label} ({state}):")
            print(f"    pos: ({pos[0]:8.4f}, {pos[1]:8.4f}, {pos[2]:8.4f})")
            print(f"    quat: ({quat[0]:.3f}, {quat[1]:.3f}, {quat[2]:.3f}, {quat[3]:.3f})")

            buttons = result.buttons
            if buttons is not None:
                print(
                    f"    trigger: {buttons.trigger_value:.2f}"
                    f"{' clicked' if buttons.trigger_clicked else ''}"
                    f"  pad: ({buttons.touchpad_x:+.2f}, {buttons.touchpad_y:+.2f})"
                    f"{' clicked' if buttons.touchpad_clicked else ''}"
                )

