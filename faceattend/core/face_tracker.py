"""
Frame-to-frame face tracking for multi-face capture sessions.

Detections are associated with existing tracks greedily: every
(track, detection) pair within the displacement bound is ranked by box
overlap, then by centre distance, and the best remaining pair is taken
first. Recognition runs through the matcher once per update for all the
faces that need it, so one repository snapshot serves the whole frame.
"""

import itertools
from dataclasses import dataclass
from typing import Optional

from faceattend.config.settings import (
    MAX_DISPLACEMENT,
    MAX_FACES,
    MAX_MISSES,
    RECOGNITION_INTERVAL,
)
from faceattend.core.errors import ConfigurationError
from faceattend.core.types import BoundingBox, Detection, MatchResult
from faceattend.utils.logging import setup_logger


@dataclass
class Track:
    track_id: int
    last_bounding_box: BoundingBox
    last_seen_frame: int
    last_identity: Optional[str] = None
    last_confidence: float = 0.0
    miss_count: int = 0
    last_match: Optional[MatchResult] = None
    last_recognized_frame: Optional[int] = None
    accepted: bool = False


@dataclass(frozen=True)
class TrackedFace:
    track_id: int
    bounding_box: BoundingBox
    match_result: Optional[MatchResult]
    detection: Detection
    recognized_now: bool = False
    accepted: bool = False


class FaceTracker:
    """
    Assigns stable track ids to detections across frames within one session.
    """

    def __init__(self, matcher, max_faces=MAX_FACES, max_misses=MAX_MISSES,
                 max_displacement=MAX_DISPLACEMENT, recognition_interval=RECOGNITION_INTERVAL):
        if max_faces < 1:
            raise ConfigurationError(f"max_faces must be at least 1, got {max_faces}")
        if max_misses < 0:
            raise ConfigurationError(f"max_misses cannot be negative, got {max_misses}")
        if recognition_interval < 1:
            raise ConfigurationError(
                f"recognition_interval must be at least 1, got {recognition_interval}"
            )

        self.matcher = matcher
        self.max_faces = max_faces
        self.max_misses = max_misses
        self.max_displacement = max_displacement
        self.recognition_interval = recognition_interval
        self.logger = setup_logger()

        self.tracks = {}
        self.removed_track_ids = []
        self._ids = itertools.count(1)
        self.frame_index = None

    def update(self, detections, frame_index):
        """
        Update tracks with this frame's detections.
        Returns one TrackedFace per detection kept under the capacity cap.
        """
        self.frame_index = frame_index
        self.removed_track_ids = []
        detections = self._apply_capacity(detections)

        assignments = self._associate(detections)
        assigned_tracks = set(assignments.values())

        # Age out tracks that were not seen this frame
        for track_id in list(self.tracks):
            if track_id in assigned_tracks:
                continue
            track = self.tracks[track_id]
            track.miss_count += 1
            if track.miss_count > self.max_misses:
                del self.tracks[track_id]
                self.removed_track_ids.append(track_id)
                self.logger.info(f"Track {track_id} lost after {track.miss_count} missed frames")

        pairs = []
        for index, detection in enumerate(detections):
            track_id = assignments.get(index)
            if track_id is None:
                track = Track(
                    track_id=next(self._ids),
                    last_bounding_box=detection.bounding_box,
                    last_seen_frame=frame_index,
                )
                self.tracks[track.track_id] = track
                self.logger.info(f"New track {track.track_id} at frame {frame_index}")
            else:
                track = self.tracks[track_id]
                track.last_bounding_box = detection.bounding_box
                track.last_seen_frame = frame_index
                track.miss_count = 0
            pairs.append((detection, track))

        due = [(d, t) for d, t in pairs if self._needs_recognition(t, frame_index)]
        if due:
            results = self.matcher.match_batch([d.descriptor for d, _ in due])
            for (_, track), result in zip(due, results):
                track.last_match = result
                track.last_identity = result.identity_id
                track.last_confidence = result.confidence
                track.last_recognized_frame = frame_index

        recognized = {id(t) for _, t in due}
        return [
            TrackedFace(
                track_id=track.track_id,
                bounding_box=track.last_bounding_box,
                match_result=track.last_match,
                detection=detection,
                recognized_now=id(track) in recognized,
                accepted=track.accepted,
            )
            for detection, track in pairs
        ]

    def mark_accepted(self, track_id):
        """
        Record that this track produced an accepted attendance decision.
        The track keeps updating its box but is never recognised again.
        """
        track = self.tracks.get(track_id)
        if track is not None:
            track.accepted = True

    def is_accepted(self, track_id):
        track = self.tracks.get(track_id)
        return bool(track and track.accepted)

    def reset(self):
        self.removed_track_ids = list(self.tracks)
        self.tracks.clear()
        self.frame_index = None

    def stats(self):
        active = sum(1 for t in self.tracks.values() if t.last_seen_frame == self.frame_index)
        recognized = sum(1 for t in self.tracks.values() if t.last_identity is not None)
        return {
            "total_tracks": len(self.tracks),
            "active_tracks": active,
            "recognized_tracks": recognized,
        }

    def _apply_capacity(self, detections):
        if len(detections) <= self.max_faces:
            return list(detections)
        kept = sorted(detections, key=lambda d: d.bounding_box.area, reverse=True)[:self.max_faces]
        self.logger.info(f"Ignoring {len(detections) - self.max_faces} face(s) above capacity {self.max_faces}")
        return kept

    def _associate(self, detections):
        """
        Returns {detection_index: track_id}.
        """
        candidates = []
        for track_id, track in self.tracks.items():
            for index, detection in enumerate(detections):
                displacement = track.last_bounding_box.center_distance(detection.bounding_box)
                if displacement > self.max_displacement:
                    continue
                overlap = track.last_bounding_box.iou(detection.bounding_box)
                candidates.append((-overlap, displacement, track_id, index))

        candidates.sort()
        assignments = {}
        used_tracks = set()
        for _, _, track_id, index in candidates:
            if index in assignments or track_id in used_tracks:
                continue
            assignments[index] = track_id
            used_tracks.add(track_id)
        return assignments

    def _needs_recognition(self, track, frame_index):
        if track.accepted:
            return False
        if track.last_recognized_frame is None:
            return True
        return frame_index - track.last_recognized_frame >= self.recognition_interval
