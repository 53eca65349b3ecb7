"""
backend에서 사용하는 Pydantic 기반 요청/응답 모델 패키지.
Pydantic-based request/response models used by the backend.
"""
