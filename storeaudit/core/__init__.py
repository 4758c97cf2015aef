"""
Ядро storeaudit: состояние аудита, кулдаун, квоты, кэш, балл.
"""
