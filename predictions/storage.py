"""
Predictions Storage

Persistence for projects, algorithms and predictions.

PRINCIPLES:
===========
1. Project reads are INNER JOINs: one row per (project, algorithm)
2. Join rows fold into one Project per id via merge_projects
3. A project with no algorithms is not readable (existence is checked
   separately through project_exists)
4. Predictions are written once and never updated
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import reduce
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import json
import sqlite3
import threading

from .contracts import Algorithm, AlgorithmPolicy, Prediction, Project, merge_projects
from .serialization import (
    backend_from_dict,
    backend_to_dict,
    configuration_from_dict,
    configuration_to_dict,
    dumps,
    features_from_dict,
    features_to_dict,
    labels_from_list,
    labels_to_list,
    policy_from_dict,
    policy_to_dict,
    security_from_dict,
    security_to_dict,
)


class StorageError(Exception):
    """Raised when the backing store rejects an operation."""


@dataclass(frozen=True)
class StorageWriteResult:
    success: bool
    error: Optional[str] = None

    @staticmethod
    def ok() -> StorageWriteResult:
        return StorageWriteResult(success=True)

    @staticmethod
    def failed(message: str) -> StorageWriteResult:
        return StorageWriteResult(success=False, error=message)


def fold_join_rows(rows: Iterable[Tuple[Project, Algorithm]]) -> List[Project]:
    """
    Fold (project, algorithm) join rows into one Project per id.

    First-seen order of project ids is preserved.
    """
    grouped: Dict[str, List[Project]] = {}
    for project, algorithm in rows:
        single = Project(
            project_id=project.project_id,
            name=project.name,
            configuration=project.configuration,
            algorithms=(algorithm,),
            policy=project.policy
        )
        grouped.setdefault(project.project_id, []).append(single)
    return [reduce(merge_projects, views) for views in grouped.values()]


class PredictionsRepository(ABC):
    """
    Abstract persistence interface.

    Implementations are synchronous; the dispatcher calls them off the
    event loop.
    """

    # Projects

    @abstractmethod
    def insert_project(self, project: Project) -> None:
        pass

    @abstractmethod
    def project_exists(self, project_id: str) -> bool:
        pass

    @abstractmethod
    def read_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    def read_all_projects(self) -> List[Project]:
        pass

    @abstractmethod
    def update_project(self, project_id: str, name: str, policy: AlgorithmPolicy) -> int:
        """Update name and policy. Returns affected rows."""
        pass

    # Algorithms

    @abstractmethod
    def insert_algorithm(self, algorithm: Algorithm) -> None:
        pass

    @abstractmethod
    def delete_algorithm(self, project_id: str, algorithm_id: str) -> int:
        pass

    # Predictions

    @abstractmethod
    def insert_prediction(self, prediction: Prediction) -> StorageWriteResult:
        pass

    @abstractmethod
    def read_prediction(self, prediction_id: str) -> Optional[Prediction]:
        pass


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryRepository(PredictionsRepository):
    """Dict-backed repository with the same join semantics as SQLite."""

    def __init__(self):
        self._lock = threading.Lock()
        self._projects: Dict[str, Project] = {}
        self._algorithms: Dict[Tuple[str, str], Algorithm] = {}
        self._predictions: Dict[str, Prediction] = {}

    def insert_project(self, project: Project) -> None:
        with self._lock:
            if project.project_id in self._projects:
                raise StorageError(f"Project {project.project_id} already stored")
            self._projects[project.project_id] = project
            for algorithm in project.algorithms:
                self._algorithms[(project.project_id, algorithm.algorithm_id)] = algorithm

    def project_exists(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._projects

    def _join_rows(self) -> List[Tuple[Project, Algorithm]]:
        return [
            (self._projects[project_id], algorithm)
            for (project_id, _), algorithm in self._algorithms.items()
            if project_id in self._projects
        ]

    def read_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            rows = [r for r in self._join_rows() if r[0].project_id == project_id]
        projects = fold_join_rows(rows)
        return projects[0] if projects else None

    def read_all_projects(self) -> List[Project]:
        with self._lock:
            rows = self._join_rows()
        return fold_join_rows(rows)

    def update_project(self, project_id: str, name: str, policy: AlgorithmPolicy) -> int:
        with self._lock:
            stored = self._projects.get(project_id)
            if stored is None:
                return 0
            self._projects[project_id] = Project(
                project_id=stored.project_id,
                name=name,
                configuration=stored.configuration,
                policy=policy
            )
            return 1

    def insert_algorithm(self, algorithm: Algorithm) -> None:
        key = (algorithm.project_id, algorithm.algorithm_id)
        with self._lock:
            if key in self._algorithms:
                raise StorageError(
                    f"Algorithm {algorithm.algorithm_id} already stored "
                    f"for project {algorithm.project_id}"
                )
            self._algorithms[key] = algorithm

    def delete_algorithm(self, project_id: str, algorithm_id: str) -> int:
        with self._lock:
            return 1 if self._algorithms.pop((project_id, algorithm_id), None) else 0

    def insert_prediction(self, prediction: Prediction) -> StorageWriteResult:
        with self._lock:
            if prediction.prediction_id in self._predictions:
                return StorageWriteResult.failed(
                    f"Prediction {prediction.prediction_id} already stored"
                )
            self._predictions[prediction.prediction_id] = prediction
        return StorageWriteResult.ok()

    def read_prediction(self, prediction_id: str) -> Optional[Prediction]:
        with self._lock:
            return self._predictions.get(prediction_id)

    def prediction_count(self) -> int:
        with self._lock:
            return len(self._predictions)


# =============================================================================
# SQLITE
# =============================================================================

class SQLiteRepository(PredictionsRepository):
    """
    SQLite-backed repository.

    Structured values (configuration, backend, policy, features, labels)
    are stored as JSON text columns.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_conn() as conn:
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS projects (
                    project_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    configuration TEXT NOT NULL,
                    policy TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS algorithms (
                    project_id TEXT NOT NULL,
                    algorithm_id TEXT NOT NULL,
                    backend TEXT NOT NULL,
                    security TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (project_id, algorithm_id),
                    FOREIGN KEY (project_id) REFERENCES projects(project_id)
                );

                CREATE TABLE IF NOT EXISTS predictions (
                    prediction_id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    algorithm_id TEXT NOT NULL,
                    features TEXT NOT NULL,
                    labels TEXT NOT NULL,
                    examples TEXT NOT NULL,
                    created_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_algorithms_project ON algorithms(project_id);
                CREATE INDEX IF NOT EXISTS idx_predictions_project ON predictions(project_id);
            ''')

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # PROJECTS
    # =========================================================================

    def insert_project(self, project: Project) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute('''
                    INSERT INTO projects (project_id, name, configuration, policy)
                    VALUES (?, ?, ?, ?)
                ''', (
                    project.project_id,
                    project.name,
                    dumps(configuration_to_dict(project.configuration)),
                    dumps(policy_to_dict(project.policy))
                ))
                for algorithm in project.algorithms:
                    self._insert_algorithm_row(conn, algorithm)
        except sqlite3.IntegrityError as e:
            raise StorageError(str(e)) from e

    def project_exists(self, project_id: str) -> bool:
        with self._get_conn() as conn:
            row = conn.execute(
                'SELECT 1 FROM projects WHERE project_id = ?', (project_id,)
            ).fetchone()
        return row is not None

    _JOIN_QUERY = '''
        SELECT p.project_id, p.name, p.configuration, p.policy,
               a.algorithm_id, a.backend, a.security
        FROM projects p
        INNER JOIN algorithms a ON a.project_id = p.project_id
    '''

    def read_project(self, project_id: str) -> Optional[Project]:
        with self._get_conn() as conn:
            rows = conn.execute(
                self._JOIN_QUERY + ' WHERE p.project_id = ? ORDER BY a.position',
                (project_id,)
            ).fetchall()
        projects = fold_join_rows(self._row_to_pair(r) for r in rows)
        return projects[0] if projects else None

    def read_all_projects(self) -> List[Project]:
        with self._get_conn() as conn:
            rows = conn.execute(
                self._JOIN_QUERY + ' ORDER BY p.project_id, a.position'
            ).fetchall()
        return fold_join_rows(self._row_to_pair(r) for r in rows)

    def update_project(self, project_id: str, name: str, policy: AlgorithmPolicy) -> int:
        with self._get_conn() as conn:
            cursor = conn.execute('''
                UPDATE projects SET name = ?, policy = ? WHERE project_id = ?
            ''', (name, dumps(policy_to_dict(policy)), project_id))
            return cursor.rowcount

    def _row_to_pair(self, row: sqlite3.Row) -> Tuple[Project, Algorithm]:
        project = Project(
            project_id=row['project_id'],
            name=row['name'],
            configuration=configuration_from_dict(json.loads(row['configuration'])),
            policy=policy_from_dict(json.loads(row['policy']))
        )
        algorithm = Algorithm(
            algorithm_id=row['algorithm_id'],
            backend=backend_from_dict(json.loads(row['backend'])),
            project_id=row['project_id'],
            security=security_from_dict(json.loads(row['security']))
        )
        return project, algorithm

    # =========================================================================
    # ALGORITHMS
    # =========================================================================

    def _insert_algorithm_row(self, conn: sqlite3.Connection, algorithm: Algorithm):
        conn.execute('''
            INSERT INTO algorithms (project_id, algorithm_id, backend, security, position)
            VALUES (?, ?, ?, ?, (
                SELECT COALESCE(MAX(position), -1) + 1 FROM algorithms WHERE project_id = ?
            ))
        ''', (
            algorithm.project_id,
            algorithm.algorithm_id,
            dumps(backend_to_dict(algorithm.backend)),
            dumps(security_to_dict(algorithm.security)),
            algorithm.project_id
        ))

    def insert_algorithm(self, algorithm: Algorithm) -> None:
        try:
            with self._get_conn() as conn:
                self._insert_algorithm_row(conn, algorithm)
        except sqlite3.IntegrityError as e:
            raise StorageError(str(e)) from e

    def delete_algorithm(self, project_id: str, algorithm_id: str) -> int:
        with self._get_conn() as conn:
            cursor = conn.execute(
                'DELETE FROM algorithms WHERE project_id = ? AND algorithm_id = ?',
                (project_id, algorithm_id)
            )
            return cursor.rowcount

    # =========================================================================
    # PREDICTIONS
    # =========================================================================

    def insert_prediction(self, prediction: Prediction) -> StorageWriteResult:
        try:
            with self._get_conn() as conn:
                conn.execute('''
                    INSERT INTO predictions
                    (prediction_id, project_id, algorithm_id, features, labels, examples, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (
                    prediction.prediction_id,
                    prediction.project_id,
                    prediction.algorithm_id,
                    dumps(features_to_dict(prediction.features)),
                    dumps(labels_to_list(prediction.labels)),
                    dumps(list(prediction.examples)),
                    prediction.created_at.isoformat() if prediction.created_at else None
                ))
        except sqlite3.Error as e:
            return StorageWriteResult.failed(str(e))
        return StorageWriteResult.ok()

    def read_prediction(self, prediction_id: str) -> Optional[Prediction]:
        with self._get_conn() as conn:
            row = conn.execute(
                'SELECT * FROM predictions WHERE prediction_id = ?', (prediction_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_prediction(row)

    def _row_to_prediction(self, row: sqlite3.Row) -> Prediction:
        return Prediction(
            prediction_id=row['prediction_id'],
            project_id=row['project_id'],
            algorithm_id=row['algorithm_id'],
            features=features_from_dict(json.loads(row['features'])),
            labels=labels_from_list(json.loads(row['labels'])),
            examples=tuple(json.loads(row['examples'])),
            created_at=datetime.fromisoformat(row['created_at']) if row['created_at'] else None
        )
