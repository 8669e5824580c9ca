import pandas as pd
from faceattend.database.db_manager import DatabaseManager
from faceattend.utils.logging import setup_logger

COLUMNS = [
    "identity_id",
    "status",
    "reason",
    "confidence",
    "is_live",
    "liveness_confidence",
    "track_id",
    "timestamp",
]


class DecisionMetrics:
    """
    Attendance decision analytics: status and rejection-reason breakdowns,
    with no-match and spoof rejections kept apart for security review.
    """

    def __init__(self, db_manager=None):
        self.db = db_manager
        self.logger = setup_logger()

    def to_frame(self, decisions):
        """
        DataFrame from AttendanceDecision objects or their plain records.
        """
        records = [d if isinstance(d, dict) else d.to_record() for d in decisions]
        if not records:
            return pd.DataFrame(columns=COLUMNS)
        df = pd.DataFrame(records)
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        return df

    def load_attendance(self, start_date=None, end_date=None, identity_id=None):
        """
        Load attendance records from the database with optional filters.
        """
        db = self.db or DatabaseManager()
        query = "SELECT * FROM attendance WHERE 1=1"
        params = []

        if start_date:
            query += " AND DATE(timestamp) >= DATE(?)"
            params.append(start_date if isinstance(start_date, str) else start_date.strftime('%Y-%m-%d'))
        if end_date:
            query += " AND DATE(timestamp) <= DATE(?)"
            params.append(end_date if isinstance(end_date, str) else end_date.strftime('%Y-%m-%d'))
        if identity_id:
            query += " AND identity_id = ?"
            params.append(identity_id)
        query += " ORDER BY timestamp DESC"

        rows = db.execute_query(query, tuple(params))
        if not rows:
            self.logger.info("No attendance records found in database")
            return pd.DataFrame(columns=COLUMNS)

        df = pd.DataFrame([dict(row) for row in rows])
        df["is_live"] = df["is_live"].astype(bool)
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        self.logger.info(f"Loaded {len(df)} attendance records")
        return df

    def summarize(self, df):
        """
        Counts per status and reason, mean accepted confidence and spoof rate.
        """
        if df.empty:
            return {
                "total": 0,
                "present": 0,
                "late": 0,
                "unauthorized": 0,
                "no_match": 0,
                "spoof_suspected": 0,
                "mean_accepted_confidence": 0.0,
                "spoof_rate": 0.0,
            }

        status_counts = df["status"].value_counts()
        reason_counts = df["reason"].value_counts()
        accepted = df[df["status"].isin(["present", "late"])]
        matched = df[df["identity_id"].notna()]
        spoofs = int(reason_counts.get("spoof_suspected", 0))

        return {
            "total": int(len(df)),
            "present": int(status_counts.get("present", 0)),
            "late": int(status_counts.get("late", 0)),
            "unauthorized": int(status_counts.get("unauthorized", 0)),
            "no_match": int(reason_counts.get("no_match", 0)),
            "spoof_suspected": spoofs,
            "mean_accepted_confidence": float(accepted["confidence"].mean()) if len(accepted) else 0.0,
            # Share of recognised faces that failed liveness
            "spoof_rate": spoofs / len(matched) if len(matched) else 0.0,
        }

    def daily_breakdown(self, df):
        """
        One row per day, one column per status.
        """
        if df.empty:
            return pd.DataFrame(columns=["date", "present", "late", "unauthorized"])

        df = df.copy()
        df["date"] = pd.to_datetime(df["timestamp"]).dt.date
        table = (
            df.groupby(["date", "status"]).size()
            .unstack(fill_value=0)
            .reindex(columns=["present", "late", "unauthorized"], fill_value=0)
            .reset_index()
        )
        table.columns.name = None
        return table
