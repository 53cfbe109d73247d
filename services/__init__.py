from .state_machine import ResumeAction, WizardStep, advance, resume_action
from .store import ProjectNotFound, ProjectStore, project_store
from .wav_encoder import encode_wav

__all__ = [
    "project_store",
    "ProjectStore",
    "ProjectNotFound",
    "ResumeAction",
    "WizardStep",
    "advance",
    "resume_action",
    "encode_wav",
]
