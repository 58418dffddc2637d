"""Episode service: progress through an episode's scenes.

Responsible for:
- Loading published episodes and enforcing the access rule
- start / submit / restart against progress/{uid}/episodes/{episodeId}
- Checking code and choice answers against server-held solutions
"""

import logging

from puzzlepass.errors import CallableError
from puzzlepass.extensions import db
from puzzlepass.models.episode import Episode, Scene, Solution
from puzzlepass.models.progress import Progress
from puzzlepass.services.entitlement_service import get_entitlement, user_can_access_episode

logger = logging.getLogger(__name__)


def get_published_episode(episode_id):
    """Return the Episode or raise not-found / failed-precondition."""
    if not episode_id:
        raise CallableError("invalid-argument", "Missing episodeId.")
    episode = db.session.get(Episode, str(episode_id))
    if episode is None:
        raise CallableError("not-found", "Episode not found.")
    if not episode.is_published:
        raise CallableError("failed-precondition", "Episode is not published.")
    return episode


def require_episode_access(user_id, episode):
    if user_can_access_episode(get_entitlement(user_id), episode):
        return
    raise CallableError("permission-denied", "Episode is locked. Purchase required.")


def _playable_episode(user_id, episode_id):
    episode = get_published_episode(episode_id)
    require_episode_access(user_id, episode)
    if not episode.start_scene_id:
        raise CallableError("failed-precondition", "Episode missing startSceneId.")
    return episode


def _reset_progress(progress, start_scene_id):
    progress.current_scene_id = start_scene_id
    progress.completed_scene_ids = []
    progress.is_completed = False
    progress.completed_at = None
    progress.started_at = db.func.now()


def start_episode(user_id, episode_id):
    episode = _playable_episode(user_id, episode_id)

    progress = db.session.get(Progress, (user_id, episode.id))
    if progress is None:
        progress = Progress(user_id=user_id, episode_id=episode.id)
        _reset_progress(progress, episode.start_scene_id)
        db.session.add(progress)
        db.session.commit()
        logger.info(f"User {user_id} started episode {episode.id}")
        return {"currentSceneId": episode.start_scene_id, "isCompleted": False}

    return {
        "currentSceneId": progress.current_scene_id or episode.start_scene_id,
        "isCompleted": bool(progress.is_completed),
    }


def restart_episode(user_id, episode_id):
    episode = _playable_episode(user_id, episode_id)

    progress = db.session.get(Progress, (user_id, episode.id))
    if progress is None:
        progress = Progress(user_id=user_id, episode_id=episode.id)
        db.session.add(progress)
    _reset_progress(progress, episode.start_scene_id)
    db.session.commit()

    return {"currentSceneId": episode.start_scene_id, "isCompleted": False}


def _expected_solution(episode_id, scene_id, field):
    solution = db.session.get(Solution, (episode_id, scene_id))
    if solution is None:
        raise CallableError("failed-precondition", "Missing solution doc.")
    return (getattr(solution, field) or "").strip()


def _check_action(scene, action):
    """Validate `action` for `scene`. Raises on a wrong action type or answer."""
    action_type = action.get("type")

    if scene.type == "story":
        if action_type != "continue":
            raise CallableError("invalid-argument", "Story requires action.type=continue.")

    elif scene.type == "code_entry":
        if action_type != "code":
            raise CallableError("invalid-argument", "Code scene requires action.type=code.")
        expected = _expected_solution(scene.episode_id, scene.scene_id, "answer")
        actual = str(action.get("code") or "").strip()
        if not expected or actual != expected:
            raise CallableError("permission-denied", "Wrong code.")

    elif scene.type == "choice":
        if action_type != "choice":
            raise CallableError("invalid-argument", "Choice scene requires action.type=choice.")
        expected = _expected_solution(scene.episode_id, scene.scene_id, "correct_option_id")
        actual = str(action.get("optionId") or "").strip()
        if not expected or actual != expected:
            raise CallableError("permission-denied", "Wrong choice.")


def submit_action(user_id, episode_id, scene_id, action):
    if not episode_id or not scene_id or not isinstance(action, dict):
        raise CallableError("invalid-argument", "Missing episodeId/sceneId/action.")

    episode = get_published_episode(episode_id)
    require_episode_access(user_id, episode)

    progress = db.session.get(Progress, (user_id, episode.id))
    if progress is None:
        raise CallableError(
            "failed-precondition", "Progress not started. Call startEpisode first."
        )
    if progress.is_completed:
        return {"isCompleted": True, "nextSceneId": None}

    if progress.current_scene_id != scene_id:
        raise CallableError(
            "failed-precondition",
            f"Not on this scene. Current is {progress.current_scene_id}.",
        )

    scene = db.session.get(Scene, (episode.id, scene_id))
    if scene is None:
        raise CallableError("not-found", "Scene not found.")

    _check_action(scene, action)

    completed = list(progress.completed_scene_ids or [])
    if scene_id not in completed:
        completed.append(scene_id)
    progress.completed_scene_ids = completed

    next_scene_id = scene.next_scene_id
    if not next_scene_id:
        progress.is_completed = True
        progress.completed_at = db.func.now()
        db.session.commit()
        logger.info(f"User {user_id} completed episode {episode.id}")
        return {"isCompleted": True, "nextSceneId": None}

    progress.current_scene_id = next_scene_id
    db.session.commit()
    return {"isCompleted": False, "nextSceneId": next_scene_id}
