"""Document processors: PDF rendering, LLM extraction and the invoice pipeline"""
