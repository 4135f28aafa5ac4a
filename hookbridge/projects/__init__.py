from hookbridge.projects.models import Connection, Project, ProjectStatus

__all__ = ["Connection", "Project", "ProjectStatus"]
