"""Test 헬퍼를 제공하는 모듈.

- FakeRepository 나 FakeUnitOfWork 를 기본 제공합니다.

"""
