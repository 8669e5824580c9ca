from faceattend.core.types import Identity
from faceattend.database.db_manager import DatabaseManager


class IdentityModel:
    """
    Identity model for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def create(self, identity_id: str, name: str = None, role: str = None):
        """
        Create an identity, or update name/role if it already exists.
        """
        query = """
            INSERT INTO identities (identity_id, name, role)
            VALUES (?, ?, ?)
            ON CONFLICT(identity_id) DO UPDATE SET
                name = COALESCE(excluded.name, identities.name),
                role = COALESCE(excluded.role, identities.role)
        """
        self.db.execute_update(query, (identity_id, name, role))
        return True

    def get_by_id(self, identity_id: str):
        result = self.db.execute_query(
            "SELECT * FROM identities WHERE identity_id = ?", (identity_id,)
        )
        if result:
            return self._to_identity(result[0])
        return None

    def get_all(self):
        result = self.db.execute_query("SELECT * FROM identities ORDER BY created_at DESC")
        return [self._to_identity(row) for row in result]

    @staticmethod
    def _to_identity(row):
        return Identity(identity_id=row["identity_id"], name=row["name"], role=row["role"])


class FaceDescriptorModel:
    """
    Face descriptor model for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def create(self, sample_id: str, identity_id: str, descriptor: str,
               confidence_score: float, captured_at: str, image_ref: str = None):
        query = """
            INSERT INTO face_descriptors (id, identity_id, descriptor, confidence_score, captured_at, image_ref)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        self.db.execute_update(
            query, (sample_id, identity_id, descriptor, confidence_score, captured_at, image_ref)
        )
        return True

    def get_by_identity(self, identity_id: str):
        """
        All descriptors of one identity, best first.
        """
        query = """
            SELECT * FROM face_descriptors
            WHERE identity_id = ?
            ORDER BY confidence_score DESC, captured_at DESC
        """
        result = self.db.execute_query(query, (identity_id,))
        return [dict(row) for row in result]

    def get_all(self):
        query = """
            SELECT * FROM face_descriptors
            ORDER BY identity_id, confidence_score DESC, captured_at DESC
        """
        result = self.db.execute_query(query)
        return [dict(row) for row in result]

    def delete_many(self, sample_ids):
        self.db.execute_many(
            "DELETE FROM face_descriptors WHERE id = ?", [(sample_id,) for sample_id in sample_ids]
        )

    def delete_by_identity(self, identity_id: str):
        count = self.db.execute_query(
            "SELECT COUNT(*) AS n FROM face_descriptors WHERE identity_id = ?", (identity_id,)
        )[0]["n"]
        self.db.execute_update("DELETE FROM face_descriptors WHERE identity_id = ?", (identity_id,))
        return count


class AttendanceModel:
    """
    Attendance model for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def create(self, decision):
        """
        Store one AttendanceDecision. Returns the new row id.
        """
        record = decision.to_record()
        query = """
            INSERT INTO attendance (identity_id, status, reason, confidence, is_live,
                                    liveness_confidence, track_id, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        return self.db.execute_update(query, (
            record["identity_id"],
            record["status"],
            record["reason"],
            record["confidence"],
            1 if record["is_live"] else 0,
            record["liveness_confidence"],
            record["track_id"],
            record["timestamp"],
        ))

    def get_all(self, limit: int = None):
        query = "SELECT * FROM attendance ORDER BY timestamp DESC"
        params = ()
        if limit:
            query += " LIMIT ?"
            params = (int(limit),)
        result = self.db.execute_query(query, params)
        return [dict(row) for row in result]

    def get_by_identity(self, identity_id: str):
        result = self.db.execute_query(
            "SELECT * FROM attendance WHERE identity_id = ? ORDER BY timestamp DESC", (identity_id,)
        )
        return [dict(row) for row in result]
