import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List

from faceattend.config.settings import (
    CLASSROOM_MAX_FACES,
    CLASSROOM_RECOGNITION_INTERVAL,
    MAX_FACES,
    RECOGNITION_INTERVAL,
)
from faceattend.core.challenge_response import Challenge, LivenessVerifier, VerifierState
from faceattend.core.errors import InvalidDetectionError
from faceattend.core.face_recognizer import AdaptiveMatcher
from faceattend.core.face_tracker import FaceTracker, TrackedFace
from faceattend.core.liveness import (
    PassiveLivenessAnalyzer,
    analyze_texture,
    assess_face_quality,
    crop_face,
)
from faceattend.core.types import AttendanceDecision, Detection
from faceattend.services.attendance_decision import AttendanceDecisionOrchestrator
from faceattend.utils.logging import setup_logger


@dataclass
class FrameResult:
    frame_index: int
    faces: List[TrackedFace] = field(default_factory=list)
    decisions: List[AttendanceDecision] = field(default_factory=list)
    challenges: Dict[int, Challenge] = field(default_factory=dict)
    rejected_detections: int = 0
    skipped: bool = False


class RecognitionSession:
    """
    Handles one capture session: tracking, recognition, liveness and
    attendance decisions for every frame the caller feeds in.

    Only one frame is processed at a time; a frame arriving while another is
    in flight is dropped, never queued. Nothing runs between calls, so once
    stop() returns no further matching happens.
    """

    def __init__(self, repository, classroom_mode=False, cutoff=None,
                 max_faces=None, recognition_interval=None,
                 matcher=None, orchestrator=None,
                 challenge_sequence=None, challenge_rng=None, clock=None,
                 reject_texture_spoof=False, on_decision=None):
        self.logger = setup_logger()
        self.repository = repository
        self.classroom_mode = classroom_mode

        if max_faces is None:
            max_faces = CLASSROOM_MAX_FACES if classroom_mode else MAX_FACES
        if recognition_interval is None:
            recognition_interval = CLASSROOM_RECOGNITION_INTERVAL if classroom_mode else RECOGNITION_INTERVAL

        self.matcher = matcher or AdaptiveMatcher(repository)
        self.tracker = FaceTracker(self.matcher, max_faces=max_faces,
                                   recognition_interval=recognition_interval)
        self.orchestrator = orchestrator or AttendanceDecisionOrchestrator(
            repository, cutoff=cutoff, reject_texture_spoof=reject_texture_spoof
        )

        self.challenge_sequence = challenge_sequence
        self.challenge_rng = challenge_rng
        self.clock = clock or time.monotonic
        self.on_decision = on_decision

        self._lock = threading.RLock()
        self._stopped = False
        self._clear_state()

    def _clear_state(self):
        self.frame_index = 0
        self._verifiers = {}
        self._analyzers = {}
        self._textures = {}
        self._qualities = {}
        self._unknown_reported = set()
        self._marked_identities = set()
        self.decisions = []

    @property
    def stopped(self):
        return self._stopped

    def process_frame(self, frame, detections, now=None):
        """
        Run one recognition cycle.

        Args:
            frame: BGR image the detections came from, or None when pixels
                are not available (passive motion checks then stay negative)
            detections: detector output, Detection objects or raw records
            now: wall-clock time used for the late/present cutoff
        """
        if self._stopped:
            self.logger.info("Frame ignored: session stopped")
            return FrameResult(frame_index=self.frame_index, skipped=True)

        if not self._lock.acquire(blocking=False):
            self.logger.info("Skipping frame: previous cycle still running")
            return FrameResult(frame_index=self.frame_index, skipped=True)

        try:
            if self._stopped:
                return FrameResult(frame_index=self.frame_index, skipped=True)

            accepted, rejected = self._validate(detections)
            self.frame_index += 1
            faces = self.tracker.update(accepted, self.frame_index)
            for track_id in self.tracker.removed_track_ids:
                self._drop_track(track_id)

            result = FrameResult(frame_index=self.frame_index, faces=faces,
                                 rejected_detections=rejected)
            for face in faces:
                if face.accepted:
                    continue
                decision = self._process_face(face, frame, now)
                if decision is not None:
                    result.decisions.append(decision)
                    self._emit(decision)

            result.challenges = {
                track_id: verifier.current_challenge
                for track_id, verifier in self._verifiers.items()
                if verifier.current_challenge is not None
            }
            return result
        finally:
            self._lock.release()

    def reset(self):
        """
        Discard tracks, open challenges and liveness history. No decision is
        produced for anything that was in progress.
        """
        with self._lock:
            for verifier in self._verifiers.values():
                verifier.abandon()
            self.tracker.reset()
            self._clear_state()
            self.logger.info("Recognition session reset")

    def stop(self):
        """
        Halt frame intake and release all session state.
        """
        self._stopped = True
        self.reset()
        self.logger.info("Recognition session stopped")

    def _validate(self, detections):
        accepted = []
        rejected = 0
        for record in detections:
            if isinstance(record, Detection):
                accepted.append(record)
                continue
            try:
                accepted.append(Detection.from_record(record))
            except InvalidDetectionError as e:
                rejected += 1
                self.logger.warning(f"Quarantined malformed detection: {e}")
        return accepted, rejected

    def _process_face(self, face, frame, now):
        track_id = face.track_id
        crop = None
        if frame is not None:
            crop = crop_face(frame, face.bounding_box)
            if crop is not None:
                self._analyzer(track_id).observe(crop)
                self._textures[track_id] = analyze_texture(crop)
                self._qualities[track_id] = assess_face_quality(crop)

        match = face.match_result
        if match is None:
            return None

        if match.identity_id is None:
            verifier = self._verifiers.pop(track_id, None)
            if verifier is not None:
                verifier.abandon()
            if face.recognized_now and track_id not in self._unknown_reported:
                self._unknown_reported.add(track_id)
                return self.orchestrator.decide(match, None, now=now, track_id=track_id)
            return None

        if match.identity_id in self._marked_identities:
            # Same person re-entered the frame under a new track
            self.tracker.mark_accepted(track_id)
            return None

        verifier = self._verifier(track_id)
        if verifier.state not in (VerifierState.CHALLENGE_ISSUED, VerifierState.COLLECTING):
            verifier.issue_challenge()
        if verifier.add_sample(frame=crop, detection=face.detection):
            return None

        challenge_result = verifier.verify()
        verdict = self._analyzer(track_id).evaluate(
            challenge_completed=challenge_result.verified,
            texture=self._textures.get(track_id),
            challenge_type=challenge_result.challenge_type.value,
            quality=self._qualities.get(track_id),
        )
        decision = self.orchestrator.decide(match, verdict, now=now, track_id=track_id)

        if decision.accepted:
            self.tracker.mark_accepted(track_id)
            self._marked_identities.add(decision.identity_id)
            self._verifiers.pop(track_id, None)
        else:
            # The next frame starts a fresh challenge
            verifier.reset()
        return decision

    def _emit(self, decision):
        self.decisions.append(decision)
        if self.on_decision is not None:
            self.on_decision(decision)

    def _verifier(self, track_id):
        verifier = self._verifiers.get(track_id)
        if verifier is None:
            verifier = LivenessVerifier(sequence=self.challenge_sequence,
                                        rng=self.challenge_rng, clock=self.clock)
            self._verifiers[track_id] = verifier
        return verifier

    def _analyzer(self, track_id):
        analyzer = self._analyzers.get(track_id)
        if analyzer is None:
            analyzer = PassiveLivenessAnalyzer()
            self._analyzers[track_id] = analyzer
        return analyzer

    def _drop_track(self, track_id):
        verifier = self._verifiers.pop(track_id, None)
        if verifier is not None:
            verifier.abandon()
        self._analyzers.pop(track_id, None)
        self._textures.pop(track_id, None)
        self._qualities.pop(track_id, None)
        self._unknown_reported.discard(track_id)
