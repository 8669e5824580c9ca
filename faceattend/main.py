import argparse
import json
import sys
from pathlib import Path

from faceattend.analytics.metrics import DecisionMetrics
from faceattend.config.settings import (
    CLUSTER_MERGE_THRESHOLD,
    CLUSTER_MIN_SIZE,
    CLUSTER_SIMILARITY_THRESHOLD,
    ENROLLMENT_CONFIDENCE,
)
from faceattend.core.clustering import ClusterEngine, cluster_stats
from faceattend.core.descriptor_repository import DescriptorRepository
from faceattend.core.errors import FaceAttendError
from faceattend.database.db_manager import DatabaseManager
from faceattend.database.descriptor_store import SqliteDescriptorStore
from faceattend.database.models import IdentityModel


def initialize_database(db_manager):
    """
    Initialize database if it doesn't exist.
    """
    if not db_manager.is_initialized():
        db_manager.initialize_db()
        print("Database initialized successfully.")
    else:
        print("Database connection verified.")


def _repository(db_manager):
    return DescriptorRepository(store=SqliteDescriptorStore(db_manager))


def _load_json(path):
    with open(path, "r") as f:
        return json.load(f)


def cmd_init_db(args, db_manager):
    initialize_database(db_manager)
    return 0


def cmd_enroll(args, db_manager):
    initialize_database(db_manager)
    descriptors = _load_json(args.file)
    if not isinstance(descriptors, list) or not descriptors:
        print(f"Error: {args.file} must contain a non-empty list of descriptors.")
        return 1

    identities = IdentityModel(db_manager)
    identities.create(args.identity, name=args.name, role=args.role)
    identity = identities.get_by_id(args.identity)
    repository = _repository(db_manager)
    stored = sum(
        1 for d in descriptors
        if repository.enroll(args.identity, d, confidence=args.confidence, image_ref=str(args.file))
    )
    label = f"{identity.identity_id} ({identity.name})" if identity.name else identity.identity_id
    print(f"Enrolled {stored} descriptor(s) for {label}, "
          f"{len(repository.get_descriptors(args.identity))} kept.")
    return 0


def cmd_stats(args, db_manager):
    stats = _repository(db_manager).stats()
    print(f"Identities:            {stats['total_users']}")
    print(f"Descriptors:           {stats['total_descriptors']}")
    print(f"Avg per identity:      {stats['avg_descriptors_per_user']:.2f}")
    return 0


def cmd_cluster(args, db_manager):
    engine = ClusterEngine()
    result = engine.cluster(
        _load_json(args.file),
        max_clusters=args.max_clusters,
        similarity_threshold=args.threshold,
        min_cluster_size=args.min_size,
    )
    clusters = result.clusters
    if args.merge is not None:
        clusters = engine.merge_similar_clusters(clusters, merge_threshold=args.merge)

    print(f"Total faces:      {result.total_faces}")
    print(f"Unclustered:      {result.unclustered_faces}")
    for cluster in clusters:
        labels = sorted({m.metadata.label for m in cluster.members if m.metadata.label})
        print(f"  {cluster.cluster_id}: size={cluster.size} "
              f"avg_confidence={cluster.avg_confidence:.3f} labels={labels}")
    stats = cluster_stats(clusters)
    print(f"Clusters:         {stats['total_clusters']} (avg size {stats['avg_cluster_size']:.2f})")
    return 0


def cmd_report(args, db_manager):
    metrics = DecisionMetrics(db_manager)
    summary = metrics.summarize(metrics.load_attendance(start_date=args.start, end_date=args.end))
    for key, value in summary.items():
        print(f"{key:26s}{value}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="faceattend", description="Face attendance check-in core")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database tables").set_defaults(func=cmd_init_db)

    enroll = sub.add_parser("enroll", help="Enroll descriptors for an identity from a JSON file")
    enroll.add_argument("identity")
    enroll.add_argument("file", type=Path)
    enroll.add_argument("--name")
    enroll.add_argument("--role")
    enroll.add_argument("--confidence", type=float, default=ENROLLMENT_CONFIDENCE)
    enroll.set_defaults(func=cmd_enroll)

    sub.add_parser("stats", help="Show descriptor repository statistics").set_defaults(func=cmd_stats)

    cluster = sub.add_parser("cluster", help="Group unlabeled descriptors from a JSON file")
    cluster.add_argument("file", type=Path)
    cluster.add_argument("--threshold", type=float, default=CLUSTER_SIMILARITY_THRESHOLD)
    cluster.add_argument("--min-size", type=int, default=CLUSTER_MIN_SIZE)
    cluster.add_argument("--max-clusters", type=int, default=None)
    cluster.add_argument("--merge", type=float, nargs="?", const=CLUSTER_MERGE_THRESHOLD, default=None)
    cluster.set_defaults(func=cmd_cluster)

    report = sub.add_parser("report", help="Summarize stored attendance decisions")
    report.add_argument("--start")
    report.add_argument("--end")
    report.set_defaults(func=cmd_report)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    db_manager = DatabaseManager(args.db)
    try:
        return args.func(args, db_manager)
    except FaceAttendError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
