"""Tests for the episode callables (startEpisode, submitAction, restartEpisode).

Covers:
- Access rule (free preview, purchased, subscriber, locked)
- Starting creates progress at the start scene; starting again is a no-op
- Story / code / choice scenes, wrong answers and wrong action types
- Completing an episode
- Restarting resets progress
"""

import pytest

from puzzlepass.extensions import db
from puzzlepass.models.episode import Solution
from puzzlepass.models.progress import Progress
from puzzlepass.services.entitlement_service import grant_episode, set_subscriber


@pytest.fixture
def owned(seed_episodes):
    """user-a owns ep-paid."""
    grant_episode("user-a", "ep-paid")
    return seed_episodes


def submit(call, scene_id, action, episode_id="ep-paid"):
    return call("submitAction", {"episodeId": episode_id, "sceneId": scene_id, "action": action})


class TestEpisodeAccess:
    """Tests for who may play which episode."""

    def test_free_preview_playable(self, call, seed_episodes):
        resp = call("startEpisode", {"episodeId": "ep-free"})
        assert resp.status_code == 200
        assert resp.get_json()["result"] == {"currentSceneId": "f1", "isCompleted": False}

    def test_locked_episode(self, call, seed_episodes):
        """Paid episode without a purchase -> permission-denied."""
        resp = call("startEpisode", {"episodeId": "ep-paid"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == {
            "code": "permission-denied",
            "message": "Episode is locked. Purchase required.",
        }

    def test_purchased_episode_playable(self, call, owned):
        resp = call("startEpisode", {"episodeId": "ep-paid"})
        assert resp.get_json()["result"]["currentSceneId"] == "s1"

    def test_subscriber_plays_everything(self, call, seed_episodes):
        set_subscriber("user-a", True)
        resp = call("startEpisode", {"episodeId": "ep-paid"})
        assert resp.status_code == 200

    def test_unpublished_episode(self, call, seed_episodes):
        set_subscriber("user-a", True)
        resp = call("startEpisode", {"episodeId": "ep-draft"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "failed-precondition"

    def test_unknown_episode(self, call, seed_episodes):
        resp = call("startEpisode", {"episodeId": "ep-nope"})
        assert resp.status_code == 404

    def test_missing_episode_id(self, call, seed_episodes):
        resp = call("startEpisode", {})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "invalid-argument"

    def test_unauthenticated(self, call, seed_episodes):
        resp = call("startEpisode", {"episodeId": "ep-free"}, uid=None)
        assert resp.status_code == 401


class TestStartEpisode:
    """Tests for startEpisode progress handling."""

    def test_creates_progress(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})

        progress = db.session.get(Progress, ("user-a", "ep-paid"))
        assert progress.current_scene_id == "s1"
        assert progress.completed_scene_ids == []
        assert progress.is_completed is False

    def test_start_again_keeps_position(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})

        resp = call("startEpisode", {"episodeId": "ep-paid"})
        assert resp.get_json()["result"] == {"currentSceneId": "s2", "isCompleted": False}


class TestSubmitAction:
    """Tests for scene answers."""

    def test_play_through(self, call, owned):
        """story -> code -> choice -> completed."""
        call("startEpisode", {"episodeId": "ep-paid"})

        resp = submit(call, "s1", {"type": "continue"})
        assert resp.get_json()["result"] == {"isCompleted": False, "nextSceneId": "s2"}

        resp = submit(call, "s2", {"type": "code", "code": " 4821 "})
        assert resp.get_json()["result"] == {"isCompleted": False, "nextSceneId": "s3"}

        resp = submit(call, "s3", {"type": "choice", "optionId": "right"})
        assert resp.get_json()["result"] == {"isCompleted": True, "nextSceneId": None}

        progress = db.session.get(Progress, ("user-a", "ep-paid"))
        assert progress.is_completed is True
        assert progress.completed_scene_ids == ["s1", "s2", "s3"]
        assert progress.completed_at is not None

    def test_completed_episode_short_circuits(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})
        submit(call, "s2", {"type": "code", "code": "4821"})
        submit(call, "s3", {"type": "choice", "optionId": "right"})

        resp = submit(call, "s1", {"type": "continue"})
        assert resp.get_json()["result"] == {"isCompleted": True, "nextSceneId": None}

    def test_wrong_code(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})

        resp = submit(call, "s2", {"type": "code", "code": "0000"})
        assert resp.status_code == 403
        assert resp.get_json()["error"]["message"] == "Wrong code."
        assert db.session.get(Progress, ("user-a", "ep-paid")).current_scene_id == "s2"

    def test_wrong_choice(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})
        submit(call, "s2", {"type": "code", "code": "4821"})

        resp = submit(call, "s3", {"type": "choice", "optionId": "left"})
        assert resp.status_code == 403
        assert resp.get_json()["error"]["message"] == "Wrong choice."

    @pytest.mark.parametrize("action", [{"type": "code", "code": "x"}, {}, {"type": "choice"}])
    def test_wrong_action_type_on_story(self, call, owned, action):
        call("startEpisode", {"episodeId": "ep-paid"})

        resp = submit(call, "s1", action)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "invalid-argument"

    def test_missing_solution(self, call, owned):
        db.session.delete(db.session.get(Solution, ("ep-paid", "s2")))
        db.session.commit()
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})

        resp = submit(call, "s2", {"type": "code", "code": "4821"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["message"] == "Missing solution doc."

    def test_not_on_scene(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})

        resp = submit(call, "s2", {"type": "code", "code": "4821"})
        assert resp.status_code == 400
        assert "Current is s1" in resp.get_json()["error"]["message"]

    def test_not_started(self, call, owned):
        resp = submit(call, "s1", {"type": "continue"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "failed-precondition"

    def test_missing_action(self, call, owned):
        resp = call("submitAction", {"episodeId": "ep-paid", "sceneId": "s1"})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "invalid-argument"

    def test_locked_after_revoke(self, call, owned):
        """Progress survives a refund, but playing requires access again."""
        from puzzlepass.services.entitlement_service import revoke_episode

        call("startEpisode", {"episodeId": "ep-paid"})
        revoke_episode("user-a", "ep-paid")

        resp = submit(call, "s1", {"type": "continue"})
        assert resp.status_code == 403


class TestRestartEpisode:
    """Tests for restartEpisode."""

    def test_resets_progress(self, call, owned):
        call("startEpisode", {"episodeId": "ep-paid"})
        submit(call, "s1", {"type": "continue"})
        submit(call, "s2", {"type": "code", "code": "4821"})

        resp = call("restartEpisode", {"episodeId": "ep-paid"})

        assert resp.get_json()["result"] == {"currentSceneId": "s1", "isCompleted": False}
        progress = db.session.get(Progress, ("user-a", "ep-paid"))
        assert progress.current_scene_id == "s1"
        assert progress.completed_scene_ids == []

    def test_restart_without_progress_creates_it(self, call, owned):
        resp = call("restartEpisode", {"episodeId": "ep-paid"})

        assert resp.status_code == 200
        assert db.session.get(Progress, ("user-a", "ep-paid")) is not None

    def test_restart_locked(self, call, seed_episodes):
        resp = call("restartEpisode", {"episodeId": "ep-paid"})
        assert resp.status_code == 403
