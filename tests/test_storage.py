"""Tests for project memory and configuration storage."""

from pathlib import Path

from reviewgraph import config_manager
from reviewgraph.storage import ProjectManager, project_name_from_path


class TestProjectManager:
    """Tests for ProjectManager."""

    def test_create_project(self, temp_project_manager: ProjectManager):
        """Test creating a new project."""
        pm = temp_project_manager
        project_dir = pm.create_or_get_project("TestProject")

        assert project_dir.exists()
        assert project_dir.is_dir()
        assert "TestProject" in pm.list_projects()

    def test_list_projects(self, temp_project_manager: ProjectManager):
        """Test listing projects."""
        pm = temp_project_manager
        assert pm.list_projects() == []

        pm.create_or_get_project("Project2")
        pm.create_or_get_project("Project1")

        assert pm.list_projects() == ["Project1", "Project2"]

    def test_metadata(self, temp_project_manager: ProjectManager):
        pm = temp_project_manager
        assert pm.get_metadata("Fresh") == {}

        pm.set_metadata("Fresh", {"source_path": "/src/fresh"})
        assert pm.get_metadata("Fresh") == {"source_path": "/src/fresh"}

        (pm.project_dir("Fresh") / "project.json").write_text("{not json")
        assert pm.get_metadata("Fresh") == {}

    def test_delete_project(self, temp_project_manager: ProjectManager):
        """Test deleting a project with nested content."""
        pm = temp_project_manager
        project_dir = pm.create_or_get_project("Doomed")
        (project_dir / "lancedb" / "symbols_hash.lance").mkdir(parents=True)
        (project_dir / "lancedb" / "symbols_hash.lance" / "data").write_text("x")

        assert pm.delete_project("Doomed") is True
        assert not project_dir.exists()
        assert pm.delete_project("Doomed") is False

    def test_project_name_from_path(self, temp_dir: Path):
        target = temp_dir / "my service"
        target.mkdir()
        assert project_name_from_path(target) == "my_service"


class TestConfigManager:
    """Tests for the TOML configuration file."""

    def test_defaults_without_file(self, temp_dir: Path, monkeypatch):
        monkeypatch.setattr(config_manager, "CONFIG_FILE", temp_dir / "missing.toml")
        assert config_manager.load_config()["provider"] == "ollama"
        assert config_manager.load_embedding_config() == {}
        assert config_manager.load_analysis_config() == {}

    def test_sections_are_preserved(self, temp_dir: Path, monkeypatch):
        monkeypatch.setattr(config_manager, "CONFIG_FILE", temp_dir / "config.toml")

        assert config_manager.save_embedding_config("minilm")
        assert config_manager.save_config("anthropic", "claude-3-5-sonnet-20241022", "key")
        assert config_manager.save_analysis_config({"within_pr_threshold": 0.9})

        full = config_manager.load_full_config()
        assert full["embeddings"] == {"model": "minilm"}
        assert full["llm"]["provider"] == "anthropic"
        assert full["analysis"] == {"within_pr_threshold": 0.9}

    def test_unknown_analysis_keys_are_dropped(self, temp_dir: Path, monkeypatch):
        path = temp_dir / "config.toml"
        path.write_text("[analysis]\nwithin_pr_threshold = 0.85\nfuzziness = 3\n")
        monkeypatch.setattr(config_manager, "CONFIG_FILE", path)

        assert config_manager.load_analysis_config() == {"within_pr_threshold": 0.85}

    def test_unknown_keys_are_not_saved(self, temp_dir: Path, monkeypatch):
        monkeypatch.setattr(config_manager, "CONFIG_FILE", temp_dir / "config.toml")

        assert config_manager.save_analysis_config({"fuzziness": 1, "batch_size": 4})

        assert config_manager.load_full_config()["analysis"] == {"batch_size": 4}

    def test_provider_defaults(self):
        assert config_manager.get_provider_config("gemini")["model"] == "gemini-2.0-flash"
        assert config_manager.get_provider_config("unknown")["provider"] == "ollama"
